from django.core.management.base import BaseCommand, CommandError

from remux.errors import StoreError
from remux.store import DjangoJobStore
from remux.utils import format_bytes


class Command(BaseCommand):
    help = "Show remux status counts and bytes saved for recent recordings."

    def add_arguments(self, parser):
        parser.add_argument("--days", type=int, default=7, help="Look-back window in days (default 7)")

    def handle(self, *args, **options):
        try:
            summary = DjangoJobStore().summary(days=options["days"])
        except StoreError as e:
            raise CommandError(str(e))
        self.stdout.write(f"Remux summary, last {options['days']} day(s)")
        for status, count in summary["counts"].items():
            self.stdout.write(f"  {status:<11} {count}")
        saved = summary["bytes_saved"]
        self.stdout.write(f"  total {'saved' if saved >= 0 else 'added'}: {format_bytes(saved)}")
        ratio = summary["avg_compression_ratio"]
        self.stdout.write("  avg compression: " + ("n/a" if ratio is None else f"{ratio:.2f}%"))
