"""sBTC payment confirmation and webhook delivery service."""
