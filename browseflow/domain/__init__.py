"""
Domain layer - value objects, entities, events, aggregates and interfaces.
"""
