"""In-process reference system under test.

A vault that accepts deposits, issues a rebasing claim token, queues
asynchronous withdrawals, allocates capital to yield strategies and
periodically rebases. The fuzzer only talks to it through the public
methods on :class:`~vaultfuzz.sut.vault.Vault` and the token mocks.
"""
