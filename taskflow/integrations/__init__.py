"""taskflow.integrations — External service gateway modules.

All outbound HTTP calls go through a gateway in this package, never via
bare `requests` calls in services or blueprints.

Current gateways:
  functions_gateway.FunctionsGateway — serverless create-user,
  reset-user-password and generate-report endpoints
"""
