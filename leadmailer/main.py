"""
Main module for the LeadMailer outreach pipeline.
"""
import argparse
import sys
import time
import schedule

from leadmailer.config import AISettings, GEMINI_API_KEY
from leadmailer.database import crud
from leadmailer.database.models import get_db_session, close_connections
from leadmailer.discovery.discovery_manager import DiscoveryManager
from leadmailer.email.ai import GeminiTextGenerator
from leadmailer.email.generator import EmailGenerator
from leadmailer.email.review import ReviewQueue
from leadmailer.email.rotation import SenderRotation
from leadmailer.email.sender import OutreachSender
from leadmailer.email.suppression import Blacklist
from leadmailer.email.validator import EmailValidator
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)


def build_generator() -> EmailGenerator:
    """Template renderer, with Gemini when an API key is configured."""
    settings = AISettings()
    text_generator = None
    if GEMINI_API_KEY:
        text_generator = GeminiTextGenerator(settings)
        if not text_generator.setup():
            text_generator = None
    return EmailGenerator(settings, text_generator)


def run_crawl(db_session, urls, pending_limit=10, max_pages=None):
    manager = DiscoveryManager(db_session)
    if urls:
        summaries = [manager.process_site(url, max_pages=max_pages) for url in urls]
    else:
        summaries = manager.run_pending_sites(limit=pending_limit)
    for summary in summaries:
        print(f"{summary['domain']}: status={summary['status']} pages={summary['pages']} "
              f"contacts={summary['contacts_found']} qualified={summary['qualified']}"
              + (f" error={summary['error']}" if summary["error"] else ""))


def run_validate(db_session, limit=100):
    counts = EmailValidator(db_session).validate_batch(crud.get_unvalidated_contacts(db_session, limit))
    print(f"Validated {counts['validated']}: {counts['valid']} valid, {counts['invalid']} invalid")


def run_sweep(db_session):
    """Health sweep of sender accounts."""
    disabled = SenderRotation(db_session).sweep_unhealthy()
    print(f"Disabled {len(disabled)} unhealthy sender accounts")


def run_send(db_session, limit=10, template_id=None, pace=False, review=False):
    """Send to safe contacts directly, or route them through the review queue."""
    template = crud.get_template(db_session, template_id)
    if template is None:
        logger.error("No active email template")
        return

    generator = build_generator()
    sender = OutreachSender(db_session, generator=generator)
    contacts = sender.suppression.safe_contacts(limit)
    logger.info(f"Found {len(contacts)} contacts safe to email")

    if review:
        queue = ReviewQueue(db_session, generator=generator, sender=sender)
        direct = []
        for contact in contacts:
            if queue.auto_queue(contact, template) is None:
                direct.append(contact)
        contacts = direct

    results = sender.send_batch(contacts, template, pace=pace)
    print(f"Sent {sum(1 for r in results if r.sent)} of {len(results)} emails")


def run_review(db_session, args):
    queue = ReviewQueue(db_session, generator=build_generator())
    if args.action == "list":
        for draft in queue.list_pending(args.limit):
            print(f"{draft.id}\t{draft.priority}\t{draft.contact.email}\t{draft.subject}\t{draft.review_notes or ''}")
    elif args.action == "approve":
        print(queue.bulk_approve(args.ids, notes=args.notes))
    elif args.action == "reject":
        print(queue.bulk_reject(args.ids, notes=args.notes))
    elif args.action == "requeue":
        for draft_id in args.ids:
            queue.requeue(draft_id)
    elif args.action == "send":
        print(queue.process_approved_queue(args.limit))
    elif args.action == "stats":
        print(queue.statistics())


def run_blacklist(db_session, args):
    blacklist = Blacklist(db_session)
    if args.action == "add":
        for value in args.values:
            if args.type == "domain":
                blacklist.add_domain(value, args.reason)
            else:
                blacklist.add_email(value, args.reason)
    elif args.action == "remove":
        for value in args.values:
            if args.type == "domain":
                blacklist.remove_domain(value)
            else:
                blacklist.remove_email(value)
    elif args.action == "import":
        print(blacklist.import_csv(args.file, args.type))
    elif args.action == "export":
        print(f"Exported {blacklist.export_csv(args.file, args.type)} entries")
    elif args.action == "stats":
        print(blacklist.statistics())


def daily_maintenance():
    """Reset sender counters, disable unhealthy senders and purge old review entries."""
    logger.info("Starting daily maintenance")
    db_session = get_db_session()
    try:
        rotation = SenderRotation(db_session)
        rotation.reset_daily_counters()
        rotation.sweep_unhealthy()
        ReviewQueue(db_session).cleanup()
        logger.info("Completed daily maintenance")
    except Exception as e:
        logger.error(f"Error in daily maintenance: {e}")
    finally:
        db_session.close()


def hourly_sweep():
    db_session = get_db_session()
    try:
        SenderRotation(db_session).sweep_unhealthy()
    except Exception as e:
        logger.error(f"Error in sender health sweep: {e}")
    finally:
        db_session.close()


def run_scheduler():
    """Run the scheduler for recurring maintenance jobs."""
    logger.info("Starting scheduler")

    schedule.every().day.at("00:05").do(daily_maintenance)
    schedule.every().hour.do(hourly_sweep)

    while True:
        schedule.run_pending()
        time.sleep(60)


def main(argv=None):
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description="LeadMailer outreach pipeline")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    crawl_parser = subparsers.add_parser("crawl", help="Crawl, extract, qualify and validate sites")
    crawl_parser.add_argument("urls", nargs="*", help="Sites to process; pending sites when omitted")
    crawl_parser.add_argument("--limit", type=int, default=10, help="Maximum number of pending sites")
    crawl_parser.add_argument("--max-pages", type=int, default=None, help="Page ceiling per site")

    validate_parser = subparsers.add_parser("validate", help="Validate unvalidated contacts")
    validate_parser.add_argument("--limit", type=int, default=100)

    subparsers.add_parser("sweep", help="Disable unhealthy sender accounts")

    send_parser = subparsers.add_parser("send", help="Email contacts that pass every gate")
    send_parser.add_argument("--limit", type=int, default=10)
    send_parser.add_argument("--template", type=int, default=None, help="Template ID")
    send_parser.add_argument("--pace", action="store_true", help="Spread sends over the sending window")
    send_parser.add_argument("--review", action="store_true", help="Queue escalated contacts for review")

    review_parser = subparsers.add_parser("review", help="Operate the review queue")
    review_parser.add_argument("action", choices=["list", "approve", "reject", "requeue", "send", "stats"])
    review_parser.add_argument("ids", nargs="*", type=int)
    review_parser.add_argument("--limit", type=int, default=10)
    review_parser.add_argument("--notes", default=None)

    blacklist_parser = subparsers.add_parser("blacklist", help="Manage the blacklist")
    blacklist_parser.add_argument("action", choices=["add", "remove", "import", "export", "stats"])
    blacklist_parser.add_argument("values", nargs="*")
    blacklist_parser.add_argument("--type", choices=["email", "domain"], default="email")
    blacklist_parser.add_argument("--reason", default="Added manually")
    blacklist_parser.add_argument("--file", default="blacklist.csv")

    subparsers.add_parser("scheduler", help="Run scheduler for daily maintenance")

    args = parser.parse_args(argv)

    if args.command == "scheduler":
        run_scheduler()
        return
    if args.command is None:
        parser.print_help()
        return

    db_session = get_db_session()
    try:
        if args.command == "crawl":
            run_crawl(db_session, args.urls, args.limit, args.max_pages)
        elif args.command == "validate":
            run_validate(db_session, args.limit)
        elif args.command == "sweep":
            run_sweep(db_session)
        elif args.command == "send":
            run_send(db_session, args.limit, args.template, args.pace, args.review)
        elif args.command == "review":
            run_review(db_session, args)
        elif args.command == "blacklist":
            run_blacklist(db_session, args)
    except Exception as e:
        logger.error(f"Application error: {e}")
        sys.exit(1)
    finally:
        db_session.close()
        close_connections()


if __name__ == "__main__":
    main()
