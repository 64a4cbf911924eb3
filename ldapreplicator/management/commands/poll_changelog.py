import json

from django.core.management.base import BaseCommand, CommandError

from ldapreplicator.directory import RemoteDirectory
from ldapreplicator.exceptions import ConfigError
from ldapreplicator.follower import ChangelogFollower
from ldapreplicator.models import ChangelogEntry


class Command(BaseCommand):
    """
    Print the change-log entries of a configured replica that match its
    subscription queries, one JSON document per line.

    Without ``--follow``, one window of ``queueSize`` change numbers is
    polled and the command exits.  The last change number seen is written to
    stderr so it can be fed back in as ``--start``.
    """

    help = "Poll the change-log of an LDAP replica from settings.LDAP_REPLICAS"

    def add_arguments(self, parser):
        parser.add_argument("name", help="The key of the replica in settings.LDAP_REPLICAS")
        parser.add_argument(
            "--start", type=int, default=1, help="The first change number to fetch"
        )
        parser.add_argument(
            "--follow",
            action="store_true",
            default=False,
            help="Keep polling every pollInterval milliseconds",
        )
        parser.add_argument(
            "--iterations",
            type=int,
            default=None,
            help="With --follow, stop after this many polls",
        )

    def write_entry(self, entry: ChangelogEntry) -> None:
        self.stdout.write(json.dumps(entry.as_dict(), default=str))

    def handle(self, *args, **options):  # noqa: ARG002
        try:
            directory = RemoteDirectory.from_settings(options["name"])
        except ConfigError as e:
            raise CommandError(str(e)) from e

        follower = ChangelogFollower(directory, self.write_entry, start=options["start"])
        try:
            if options["follow"]:
                follower.run(iterations=options["iterations"])
            else:
                directory.connect()
                if not directory.connected:
                    msg = f"Unable to connect to {directory.config['url']}"
                    raise CommandError(msg)
                follower.poll_once()
        finally:
            directory.destroy()
        self.stderr.write(f"next start: {follower.position}")
