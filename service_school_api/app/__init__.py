"""
School API service package.

Serves student records and fronts repeated reads with a Redis response
cache that degrades to pass-through whenever Redis is missing or failing.

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.caching: Redis store adapter, cache service and HTTP cache middlewares.
- app.auth: Failed-login counters and temporary account lockout.
- app.ratelimit: Fixed-window rate limiter and middleware.
- app.students: Student models and in-memory repository.
"""
