import argparse
import logging
from http import HTTPStatus
from requests import post
from datetime import datetime, timedelta, timezone

from busbook.src import argon2
from busbook.src.enums import BusType, Role, SubRole
from busbook.src.constants import (
    MASTER_ADMIN_EMAIL,
    MASTER_ADMIN_PASSWORD,
    MASTER_ADMIN_PHONE,
    MASTER_ADMIN_USERNAME,
)
from busbook.src.urls import URL_BUS, URL_ROUTE, URL_TOKEN, URL_TRIP, URL_USER
from busbook.src.db import User, sessionMaker, engine, ORMbase

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Setup")


# ----------------------------------- Project Setup -------------------------------------------#
def removeTables():
    ORMbase.metadata.drop_all(engine)
    logger.info("* All tables deleted")


def createTables():
    ORMbase.metadata.create_all(engine)
    logger.info("* All tables created")


def initDB():
    session = sessionMaker()
    try:
        masterAdmin = (
            session.query(User).filter(User.role == Role.MASTER_ADMIN).first()
        )
        if masterAdmin is not None:
            logger.info(f"* Master admin already exists ({masterAdmin.username})")
            return

        masterAdmin = User(
            username=MASTER_ADMIN_USERNAME,
            password=argon2.makePassword(MASTER_ADMIN_PASSWORD),
            role=Role.MASTER_ADMIN,
            full_name="BusBook master admin",
            email_id=MASTER_ADMIN_EMAIL,
            phone_number=MASTER_ADMIN_PHONE,
        )
        session.add(masterAdmin)
        session.commit()
        logger.info("* Master admin created")
    finally:
        session.close()


# ----------------------------------- Demo data -----------------------------------------------#
def POST(URL: str, header: dict = {}, status_code: int = HTTPStatus.CREATED, **kwargs):
    response = post(URL, headers=header, **kwargs)
    assert response.status_code == status_code, response.text
    return response


def login(baseURL: str, username: str, password: str) -> dict:
    credentials = {"username": username, "password": password}
    response = POST(baseURL + URL_TOKEN, data=credentials)
    return {"Authorization": f"Bearer {response.json()['data']['access_token']}"}


def createAccount(baseURL: str, header: dict, **accountData) -> dict:
    response = POST(baseURL + URL_USER, header=header, data=accountData)
    return response.json()["data"]


def testDB(baseURL: str):
    masterAdmin = login(baseURL, MASTER_ADMIN_USERNAME, MASTER_ADMIN_PASSWORD)

    # Operator hierarchy
    createAccount(
        baseURL,
        masterAdmin,
        username="owner",
        password="password",
        role=Role.BUS_OWNER,
        full_name="Demo bus owner",
        email_id="owner@busbook.com",
        phone_number="9000000001",
    )
    owner = login(baseURL, "owner", "password")
    createAccount(
        baseURL,
        owner,
        username="busadmin",
        password="password",
        role=Role.BUS_ADMIN,
        full_name="Demo bus admin",
        email_id="busadmin@busbook.com",
        phone_number="9000000002",
    )
    busAdmin = login(baseURL, "busadmin", "password")
    createAccount(
        baseURL,
        busAdmin,
        username="counter",
        password="password",
        role=Role.BOOKING_MAN,
        full_name="Demo booking man",
        email_id="counter@busbook.com",
        phone_number="9000000003",
    )
    driver = createAccount(
        baseURL,
        busAdmin,
        username="driver",
        password="password",
        role=Role.BUS_EMPLOYEE,
        sub_role=SubRole.DRIVER,
        full_name="Demo driver",
        email_id="driver@busbook.com",
        phone_number="9000000004",
        license_number="KL0120110001234",
    )
    logger.info("* Created operator accounts")

    # Fleet
    bus = POST(
        baseURL + URL_BUS,
        header=busAdmin,
        data={
            "bus_number": "KL01AB1234",
            "name": "Demo sleeper",
            "bus_type": BusType.SLEEPER,
            "total_seats": 40,
            "amenities": ["WiFi", "Charging Point"],
        },
    ).json()["data"]
    route = POST(
        baseURL + URL_ROUTE,
        header=busAdmin,
        json={
            "name": "Kochi - Thiruvananthapuram",
            "origin": "Kochi",
            "destination": "Thiruvananthapuram",
            "origin_latitude": 9.9312,
            "origin_longitude": 76.2673,
            "destination_latitude": 8.5241,
            "destination_longitude": 76.9366,
            "stops": [
                {
                    "name": "Kollam",
                    "latitude": 8.8932,
                    "longitude": 76.6141,
                    "arrival_offset": 180,
                    "departure_offset": 190,
                }
            ],
            "estimated_duration": 300,
            "base_fare": 300,
        },
    ).json()["data"]
    departureAt = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=1)
    POST(
        baseURL + URL_TRIP,
        header=busAdmin,
        data={
            "bus_id": bus["id"],
            "route_id": route["id"],
            "driver_id": driver["id"],
            "departure_at": departureAt.isoformat(),
            "arrival_at": (departureAt + timedelta(hours=5)).isoformat(),
        },
    )
    logger.info("* Created demo bus, route and trip")


# Setup database
if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    # remove tables
    parser.add_argument("-rm", action="store_true", help="remove tables")
    parser.add_argument("-cr", action="store_true", help="create tables")
    parser.add_argument("-init", action="store_true", help="create the master admin")
    parser.add_argument("-test", action="store_true", help="add demo data over HTTP")
    parser.add_argument(
        "-url", default="http://127.0.0.1:8080/api", help="API base URL for -test"
    )
    args = parser.parse_args()

    if args.cr:
        createTables()
    if args.init:
        initDB()
    if args.test:
        testDB(args.url)
    if args.rm:
        removeTables()
