"""Run bookkeeping: the per-node trace and the execution response."""
