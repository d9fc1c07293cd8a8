import logging

from repository import RentalRepository
from schemas import RentalInfo

logger = logging.getLogger(__name__)


class PackageAssigner:
    """Attaches the default distance package to a rental.

    The default is the active package of the vehicle's model with the
    smallest included distance. Rentals whose model has no active package
    are left without one; billing then counts every unit of distance as
    overage.
    """

    def __init__(self, repository: RentalRepository):
        self.repository = repository

    def ensure_package(self, rental: RentalInfo) -> RentalInfo:
        if rental.package_id is not None:
            return rental

        vehicle = self.repository.get_vehicle(rental.vehicle_id)
        if vehicle.model_id is None:
            logger.warning(f"Vehicle {vehicle.id} has no model, rental {rental.id} keeps no package")
            return rental

        packages = self.repository.get_active_packages_for_model(vehicle.model_id)
        if not packages:
            logger.warning(f"No active packages for model {vehicle.model_id}, rental {rental.id} keeps no package")
            return rental

        package = min(packages, key=lambda p: (p.included_distance, p.id))
        with self.repository.transaction():
            updated = self.repository.update_rental(rental.id, {
                "package_id": package.id,
                "included_distance": package.included_distance,
                "extra_distance_rate": package.extra_distance_rate,
            })
        logger.info(f"Assigned package {package.id} to rental {rental.id}")
        return updated
