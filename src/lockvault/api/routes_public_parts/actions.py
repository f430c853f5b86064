from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import ValidationError

from lockvault.api.errors import ApiError
from lockvault.api.routes_public_parts.common import Json, _service
from lockvault.api.schemas import ActionEnvelope

router = APIRouter()


@router.post("/actions/submit")
async def actions_submit(request: Request) -> Json:
    """Submit a signed action envelope.

    Body:
      {action, caller, nonce, payload, sig}

    Returns:
      { ok, action, receipt, next_nonce }
    """
    svc = _service(request)

    try:
        body = await request.json()
    except ValueError:
        raise ApiError.bad_request("bad_envelope", "body is not JSON", {})
    if not isinstance(body, dict):
        raise ApiError.bad_request("bad_envelope", "body must be an action envelope object", {})

    try:
        env = ActionEnvelope.model_validate(body)
    except ValidationError as e:
        raise ApiError.bad_request(
            "bad_envelope",
            "invalid action envelope",
            {"errors": [{"loc": [str(x) for x in err["loc"]], "msg": err["msg"]} for err in e.errors()]},
        )

    res = svc.submit(body)
    if not res.get("ok"):
        raise ApiError.from_rejection(str(res.get("error")), str(res.get("reason") or "rejected"), res.get("details"))

    return {"ok": True, "action": env.action, "receipt": res["receipt"], "next_nonce": svc.next_nonce(env.caller.strip())}
