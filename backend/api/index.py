"""
Serverless Entry Point for the CRM Enrichment API
Using Mangum for ASGI to AWS Lambda adapter
"""
from mangum import Mangum

from app.main import create_app

app = create_app()

# Mangum handler for serverless; the schema is managed by migrations there
handler = Mangum(app, lifespan="off")
