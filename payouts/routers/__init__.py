"""HTTP routes of the payout engine."""
