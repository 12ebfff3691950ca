"""
Backend package: Flask API, SMS providers and the delivery flow.

Entry point: backend.app.create_app()
"""
