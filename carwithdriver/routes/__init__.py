# Routes package initialization
from .shared import (
    db, client, security, hash_password, verify_password, create_token, verify_token,
    get_current_user, get_current_guest, get_current_driver, get_current_admin,
    UserRole, DriverApprovalStatus, VehicleStatus, BookingStatus, OfferStatus, ReviewStatus,
    JWT_SECRET, JWT_ALGORITHM
)

# Import all routers
from .auth import router as auth_router
from .vehicles import router as vehicles_router
from .bookings import router as bookings_router
from .drivers import router as drivers_router
from .chat import router as chat_router
from .briefs import router as briefs_router
from .directory import router as directory_router
from .support import router as support_router
from .admin import router as admin_router
