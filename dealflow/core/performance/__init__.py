# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Investment performance ratios (MOIC, TVPI, DPI, RVPI, IRR)."""
