import json

import azure.functions as func

from api.config import get_notify_config
from api.whatsapp import handle_notify


def _json_response(payload: dict, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(payload, ensure_ascii=False),
        mimetype="application/json",
        status_code=status_code,
    )


def main(req: func.HttpRequest) -> func.HttpResponse:
    try:
        body = req.get_json()
    except ValueError:
        body = None
    status_code, payload = handle_notify(req.method, body, config_loader=get_notify_config)
    return _json_response(payload, status_code=status_code)
