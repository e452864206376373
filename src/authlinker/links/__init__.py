"""Link issuance and verification core."""
