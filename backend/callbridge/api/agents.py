from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from ..db import get_db, AuthError
from ..schemas.pydantic_schemas import CreateAgentRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _undo(step: str, action, user_id: str) -> None:
    """Run one rollback step; a failure is logged so later steps still run."""
    try:
        action(user_id)
    except Exception as e:
        logger.warning(f"Could not {step} for {user_id} during rollback: {e}")


@router.post("/create-agent")
async def create_agent(body: CreateAgentRequest, authorization: Optional[str] = Header(default=None)):
    """Provision a login and an agent record under one of the caller's companies.

    The auth user, the ``users`` profile and the ``agents`` row are created in
    that order; a failure part-way deletes whatever was created before it.
    """
    try:
        if not (body.email and body.password and body.name and body.companyId):
            raise HTTPException(status_code=400, detail="Missing required fields: email, password, name, companyId")
        if not authorization:
            raise HTTPException(status_code=401, detail="Unauthorized")

        db = get_db()
        token = authorization.replace("Bearer ", "", 1).strip()
        owner_id = db.get_user_id_for_token(token)
        if not owner_id:
            raise HTTPException(status_code=401, detail="Invalid authentication")

        company = db.get_owned_company(body.companyId, owner_id)
        if not company:
            raise HTTPException(status_code=403, detail="Company not found or unauthorized")

        try:
            user_id = db.create_auth_user(body.email, body.password, {
                "full_name": body.name,
                "role": "agent",
                "phone_number": body.phone,
            })
        except AuthError as e:
            raise HTTPException(status_code=400, detail=str(e) or "Failed to create user")
        logger.info(f"Created auth user {user_id} for {body.email}")

        try:
            db.insert_user({
                "user_id": user_id,
                "email": body.email,
                "full_name": body.name,
                "role": "agent",
                "phone_number": body.phone,
            })
        except Exception as e:
            logger.error(f"Error creating user record: {e}")
            _undo("delete auth user", db.delete_auth_user, user_id)
            raise HTTPException(status_code=500, detail="Failed to create user profile")

        try:
            agent = db.insert_agent({
                "user_id": user_id,
                "name": body.name,
                "company_id": body.companyId,
                "status": "offline",
            })
        except Exception as e:
            logger.error(f"Error creating agent: {e}")
            _undo("delete user profile", db.delete_user, user_id)
            _undo("delete auth user", db.delete_auth_user, user_id)
            raise HTTPException(status_code=500, detail="Failed to create agent record")

        logger.info(f"Agent {agent.get('id')} created for company {body.companyId}")
        return {"success": True, "agent": agent, "message": "Agent created successfully"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in create-agent: {e}")
        return JSONResponse(status_code=500, content={"error": str(e) or "Internal server error"})
