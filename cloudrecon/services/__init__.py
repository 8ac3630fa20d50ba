"""Service layer between the HTTP routers and the task execution core."""
