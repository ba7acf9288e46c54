"""FastAPI routes receiving Slack events and interactive button clicks."""

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from controllers.event_controller import receive_event, receive_interaction

router = APIRouter(prefix="/slack")


@router.post("/events")
async def slack_events_route(request: Request, background_tasks: BackgroundTasks):
	try:
		return await receive_event(request, background_tasks)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/interactions")
async def slack_interactions_route(request: Request, background_tasks: BackgroundTasks):
	try:
		return await receive_interaction(request, background_tasks)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
