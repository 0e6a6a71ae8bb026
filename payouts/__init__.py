"""Commission collection and payout scheduling engine."""
