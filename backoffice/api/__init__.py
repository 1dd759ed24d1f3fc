"""HTTP surface for the back-office workflows."""
