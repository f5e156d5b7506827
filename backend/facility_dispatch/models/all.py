"""Import every model so Base.metadata is complete."""
from facility_dispatch.models.incident import Incident  # noqa: F401
from facility_dispatch.models.incident_event import IncidentEvent  # noqa: F401
from facility_dispatch.models.notification import Notification  # noqa: F401
from facility_dispatch.models.rate_limit_counter import RateLimitCounter  # noqa: F401
from facility_dispatch.models.schedule import Schedule  # noqa: F401
from facility_dispatch.models.technician import Technician  # noqa: F401
from facility_dispatch.models.user import User  # noqa: F401
