#!/usr/bin/env python3
"""
Main entry point for the introductions service.

This is a lightweight Flask app that provides:
- Candidate responses to introduction requests via emailed links
- Employer profile views, introduction requests and job claims
- Interview slot scheduling
- Admin back office for introductions
"""
from app import create_app

app = create_app()

if __name__ == '__main__':
    from scheduler import start_background_services

    # Reaper and daily digest run on a daemon thread
    start_background_services(app)

    app.run(host='0.0.0.0', port=5000, debug=False)
