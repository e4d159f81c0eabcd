"""Alumni rewards ledger: reward progress, verification, badges and leaderboards."""
