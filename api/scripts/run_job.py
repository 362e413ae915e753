import argparse
import logging
import sys
from datetime import date, datetime, timezone
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from dailymeetup import main as m


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a scheduled daily meetup job")
    sub = parser.add_subparsers(dest="job", required=True)

    pair = sub.add_parser("pair", help="create today's pairings")
    pair.add_argument("--force", action="store_true")
    pair.add_argument("--seed", type=int, default=None)

    sweep = sub.add_parser("sweep", help="mark expired pairings as flaked")
    sweep.add_argument("--day", type=date.fromisoformat, default=None)
    sweep.add_argument("--force", action="store_true")

    remind = sub.add_parser("remind", help="queue reminders for open pairings")
    remind.add_argument("--final", action="store_true")

    deliver = sub.add_parser("deliver", help="deliver pending notifications")
    deliver.add_argument("--limit", type=int, default=1000)

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    m.init_db()
    now = datetime.now(timezone.utc)
    if args.job == "pair":
        summary = m.repo_run_daily_pairing(now, force=args.force, seed=args.seed)
    elif args.job == "sweep":
        summary = m.repo_run_flake_sweep(now, day=args.day, force=args.force)
    elif args.job == "remind":
        summary = m.repo_enqueue_reminders(now, final=args.final)
    else:
        summary = m.repo_process_notifications(now, limit=args.limit)

    print(f"Job {args.job} completed")
    for k, v in summary.items():
        print(f"- {k}: {v}")


if __name__ == "__main__":
    main()
