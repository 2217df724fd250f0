"""Domain exceptions shared by services and blueprints."""
