"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~goslings.exceptions.GoslingsError` subclass.
External tooling (CI scripts, shell wrappers) can inspect the exit code to
determine the failure class without parsing stderr.

Example::

    $ goslings auth token graph
    $ echo $?
    4   # EXIT_CREDENTIALS_EXPIRED -- run `goslings auth renew`
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or no credentials are cached."""

EXIT_CREDENTIALS_EXPIRED = 4
"""Credentials are cached but stale; renewal is the expected recovery."""

EXIT_STORE_ERROR = 5
"""The encrypted credential store could not be read, written, or created."""

EXIT_CANCELLED = 130
"""The operation was cancelled by the caller or ran past its deadline."""
