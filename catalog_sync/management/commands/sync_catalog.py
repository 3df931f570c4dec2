from django.core.management.base import BaseCommand, CommandError

from catalog_sync.feed_sync import FeedSyncEngine
from catalog_sync.platform_sync import PlatformSyncEngine
from catalog_sync.price_sync import PriceSyncEngine


class Command(BaseCommand):
    help = "Run the feed → database, market → database prices or database → WooCommerce sync."

    def add_arguments(self, parser):
        parser.add_argument('target', choices=['feed', 'prices', 'platform', 'all'], help="Which sync to run")
        parser.add_argument('--dry-run', action='store_true', help="Report what would change without writing")
        parser.add_argument('--limit', type=int, default=None, help="Max products to reprice or push")

    def handle(self, *args, **options):
        target = options['target']
        dry_run = options['dry_run']
        failed = False

        if target in ('feed', 'all'):
            result = FeedSyncEngine.from_settings().sync(dry_run=dry_run)
            failed |= self._report('Feed', result)
            if not result['success'] and target == 'all':
                raise CommandError("Feed sync failed; platform sync not started.")

        if target == 'prices':
            result = PriceSyncEngine.from_settings().sync(dry_run=dry_run, limit=options['limit'])
            failed |= self._report('Price', result)

        if target in ('platform', 'all'):
            result = PlatformSyncEngine.from_settings().sync(dry_run=dry_run, limit=options['limit'])
            failed |= self._report('Platform', result)

        if failed:
            raise CommandError("Sync finished with errors.")

    def _report(self, label, result) -> bool:
        if not result['success']:
            self.stderr.write(self.style.ERROR(f"{label} sync failed: {result['error']}"))
            return True
        stats = ', '.join(f"{key}={value}" for key, value in result['stats'].items())
        self.stdout.write(self.style.SUCCESS(f"{label} sync done in {result['duration']}s: {stats}"))
        return bool(result['stats'].get('errors'))
