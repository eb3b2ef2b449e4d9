"""Bounty board service: task marketplace with bids, verification and reputation."""
