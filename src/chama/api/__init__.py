"""HTTP surface for payment intake and reports."""
