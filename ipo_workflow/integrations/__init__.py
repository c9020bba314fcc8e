"""ipo_workflow.integrations — downstream collaborator gateways.

Side effects that live outside the workflow's own tables go through a
gateway in this package, never through ad hoc writes in services or
blueprints. A gateway reports failure by raising DependencyFailure; the
calling service turns that into a warning on an otherwise successful
result.

Current gateways:
  listing_gateway.ListingGateway — exchange listing record on approval
"""
