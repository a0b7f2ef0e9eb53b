# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""FocusFlow - an AI moderator bot that runs focus groups in live meetings."""

__version__ = "0.1.0"
