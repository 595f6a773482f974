# backend/abby/services/events.py
from abby.kafka import publish_event
from abby.services.session_lifecycle import CompletionResult


async def publish_completion(result: CompletionResult) -> None:
    """session.completed 한 건 + 이번에 획득한 인증마다 certification.earned."""
    session = result.session
    await publish_event("session.completed", session.id, {
        "session_id": session.id,
        "client_id": session.client_id,
        "doctor_id": session.doctor_id,
        "session_type": session.type,
        "quiz_score": result.quiz_result.score if result.quiz_result else None,
        "counted_for_certification": result.counted_for_certification,
    })
    for certification_id in result.earned_certification_ids:
        await publish_event("certification.earned", session.client_id, {
            "user_id": session.client_id,
            "certification_id": certification_id,
            "session_id": session.id,
        })
