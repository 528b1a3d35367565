# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""DealFlow - capital-call and funding lifecycle engine for private-investment pipelines."""

__version__ = "0.1.0"
