from sqlalchemy.orm import Session

from app.models.funnels import Funnel, FunnelStep


def get_funnel(db: Session, funnel_id: str) -> Funnel | None:
    return db.query(Funnel).filter(Funnel.id == funnel_id).first()


def list_funnels(db: Session, *, funnel_id: str | None = None) -> list[Funnel]:
    query = db.query(Funnel)
    if funnel_id is not None:
        query = query.filter(Funnel.id == funnel_id)
    return query.order_by(Funnel.created_at.asc(), Funnel.id.asc()).all()


def list_funnel_steps(db: Session, funnel_id: str) -> list[FunnelStep]:
    return (
        db.query(FunnelStep)
        .filter(FunnelStep.funnel_id == funnel_id)
        .order_by(FunnelStep.step_order.asc(), FunnelStep.id.asc())
        .all()
    )


def create_funnel(
    db: Session,
    *,
    name: str,
    steps: list[dict],
    funnel_id: str | None = None,
    description: str | None = None,
) -> Funnel:
    """Steps without an explicit step_order are numbered after the highest given one."""
    funnel = Funnel(name=name, description=description)
    if funnel_id:
        funnel.id = funnel_id
    next_order = max((s["step_order"] for s in steps if s.get("step_order") is not None), default=-1) + 1
    for step in steps:
        order = step.get("step_order")
        if order is None:
            order = next_order
            next_order += 1
        funnel.steps.append(
            FunnelStep(
                name=step["name"],
                url=step.get("url"),
                step_order=order,
                visitors=0,
                dropoff=0.0,
            )
        )
    db.add(funnel)
    db.commit()
    db.refresh(funnel)
    return funnel
