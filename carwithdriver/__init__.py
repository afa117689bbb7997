# Car With Driver - marketplace API for hiring a car and driver in Sri Lanka
