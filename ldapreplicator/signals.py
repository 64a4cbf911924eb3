"""
Signals sent by :py:class:`ldapreplicator.directory.RemoteDirectory`.

Both signals are sent with the directory instance as ``sender``.
"""

from django.dispatch import Signal

#: Sent once the session is bound and bootstrapped.  Extra kwargs:
#: ``identity`` (a :py:class:`ldapreplicator.supervisor.RemoteIdentity`).
directory_connected = Signal()

#: Sent for non-fatal anomalies: undecodable payloads, unknown change types,
#: failed change-log searches.  Extra kwargs: ``error`` (the exception).
replication_error = Signal()
