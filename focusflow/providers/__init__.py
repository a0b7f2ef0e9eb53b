# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
External capability adapters: speech synthesis, transcription and the
meeting participant driver.
"""
