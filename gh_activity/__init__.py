# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""GitHub activity fetching and caching.

Entry point for library use is `ActivityContext.from_config(ActivityConfig.from_env())`.
"""

__version__ = "0.1.0"
