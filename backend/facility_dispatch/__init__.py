"""Facility Dispatch: SLA-bound incident routing for facility technicians."""
