"""Infrastructure shared by the service and batch commands."""
