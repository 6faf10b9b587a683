from django.core.management.base import BaseCommand

from remux.scheduler import build_pipeline, startup_checks
from remux.stats import RemuxStats


class Command(BaseCommand):
    help = "Run a single remux discovery+dispatch cycle in the foreground and print statistics."

    def handle(self, *args, **options):
        startup_checks()
        run_stats = RemuxStats()
        outcomes = build_pipeline(run_stats).run_cycle()
        if outcomes is None:
            self.stdout.write(self.style.WARNING("Another cycle is already running in this process"))
            return
        for o in outcomes:
            line = f"{o.job_id}  {o.outcome.value}  attempt={o.attempt}"
            if o.error:
                line += f"  error={o.error}"
            self.stdout.write(line)
        snap = run_stats.report()
        self.stdout.write(self.style.SUCCESS(
            f"Cycle completed: processed={snap.processed} skipped={snap.skipped} failed={snap.failed}"
        ))
