# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0
