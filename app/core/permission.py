# app/core/permission.py
from __future__ import annotations

from fastapi import Depends, HTTPException, status

from app.dependencies import Principal, get_current_user
from app.modules.appointments.models import Appointment


def require_roles(*allowed: str):
    """
    Role guard factory. Example: Depends(require_roles("admin", "doctor"))
    """
    async def dep(user: Principal = Depends(get_current_user)) -> Principal:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="forbidden_role",
            )
        return user
    return dep


def ensure_appointment_access(user: Principal, appt: Appointment) -> None:
    """
    - patient can only touch their own appointments
    - doctor can only touch appointments they are the doctor of
    - admin touches all
    """
    if user.role == "admin":
        return
    owner = appt.patient_id if user.role == "patient" else appt.doctor_id
    if owner != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="not_owner",
        )
