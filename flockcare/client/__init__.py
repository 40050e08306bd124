"""Device-side task surfaces: ledger client, local overlay, notifier and view coordination."""
