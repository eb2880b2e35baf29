import time
import threading
import logging
import schedule

from database import db
from notifications import send_email, admin_recipients
from utils import utcnow

logger = logging.getLogger(__name__)


def run_reaper(app):
    """Apply the time-driven transitions nobody triggered by request"""
    with app.app_context():
        try:
            now = utcnow()
            expired = app.extensions["introductions"].expire_lapsed(now)
            cancelled = app.extensions["interviews"].cancel_stale(now)
            logger.info("Reaper run: %d introductions expired, %d interview proposals cancelled", expired, cancelled)
            return expired, cancelled

        except Exception as e:
            logger.error("Error running reaper: %s", e, exc_info=True)
            db.session.rollback()
            return None


def generate_daily_digest(app):
    """Generate daily introductions digest"""
    with app.app_context():
        try:
            now = utcnow()
            stats = app.extensions["introductions"].stats(now)
            report = {
                'date': now.strftime('%Y-%m-%d'),
                'stats': stats,
            }

            logger.info("Generated daily digest: %d active introductions, %d expiring soon",
                        stats['active'], stats['expiringSoon'])

            # Send digest via email if configured
            if app.config.get('SMTP_ENABLED'):
                send_daily_digest_email(report)

            return report

        except Exception as e:
            logger.error("Error generating daily digest: %s", e, exc_info=True)
            return None


def send_daily_digest_email(report):
    """Send daily digest via email"""
    stats = report['stats']
    rows = ''.join(
        f"<tr><td>{label}</td><td>{count}</td></tr>"
        for label, count in stats['byStatus'].items()
    )
    html_content = f"""
    <html>
    <head>
        <style>
            body {{ font-family: Arial, sans-serif; }}
            table {{ width: 100%; border-collapse: collapse; margin: 20px 0; }}
            th, td {{ padding: 10px; text-align: left; border-bottom: 1px solid #ddd; }}
        </style>
    </head>
    <body>
        <h2>Introductions Digest - {report['date']}</h2>
        <p>Active: {stats['active']} &middot; Expiring soon: {stats['expiringSoon']}</p>
        <p>Last 7 days: {stats['recentActivity']['requests']} requests,
           {stats['recentActivity']['introductions']} introductions</p>
        <table><tr><th>Status</th><th>Count</th></tr>{rows}</table>
    </body>
    </html>
    """
    send_email(admin_recipients(), f"Daily Introductions Digest - {report['date']}", html_content)


def schedule_tasks(app):
    """Schedule all background tasks"""
    interval = app.config.get('REAPER_INTERVAL_MINUTES', 15)
    schedule.every(interval).minutes.do(run_reaper, app)

    # Daily digest at 8 AM
    schedule.every().day.at("08:00").do(generate_daily_digest, app)

    logger.info("Scheduled tasks configured (reaper every %d minutes)", interval)


def run_scheduler():
    """Run the scheduler loop"""
    logger.info("Starting scheduler...")

    while True:
        try:
            schedule.run_pending()
            time.sleep(60)  # Check every minute
        except KeyboardInterrupt:
            logger.info("Scheduler stopped")
            break
        except Exception as e:
            logger.error("Scheduler error: %s", e)
            time.sleep(300)  # Wait 5 minutes before retrying


def start_background_services(app):
    """Start all background services"""
    logger.info("Starting background services...")

    schedule_tasks(app)

    scheduler_thread = threading.Thread(target=run_scheduler, daemon=True)
    scheduler_thread.start()
    logger.info("Scheduler started")


if __name__ == '__main__':
    from app import create_app

    start_background_services(create_app())

    # Keep main thread alive
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Background services stopped")
