"""EcoPickup — pickup lifecycle service for the recycling marketplace."""
