# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
