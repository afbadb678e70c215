from mangum import Mangum

from exchange.api import app

handler = Mangum(app, api_gateway_base_path="/api")
