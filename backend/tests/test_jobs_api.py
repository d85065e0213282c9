"""HTTP tests for the jobs, catalog and events routers."""

import uuid

from conftest import OTHER_WORKER_ID, REQUESTER_ID, WORKER_ID, make_image_bytes

BASE_KEYS = ["stove", "stove_back", "fridge", "fridge_back", "toilet", "bathtub", "sink"]
AFTER_GENERAL_KEYS = ["kitchen", "bathroom", "living_room"]


async def create_job(client, **body):
    body.setdefault("unit_type", "studio")
    body.setdefault("assigned_worker_id", WORKER_ID)
    body.setdefault("requester_id", REQUESTER_ID)
    response = await client.post("/v1/jobs", json=body)
    assert response.status_code == 201, response.text
    return response.json()


async def upload(client, job_id, phase, key, names=("photo.jpg",)):
    files = [("files", (name, make_image_bytes(320, 240), "image/jpeg")) for name in names]
    return await client.post(
        f"/v1/jobs/{job_id}/photos",
        data={"phase": phase, "category_key": key},
        files=files,
    )


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_create_and_get_job(client):
    job = await create_job(client, features=["dishwasher"], notes="Key under the mat")

    assert job["status"] == "pending"
    assert job["unit_type"] == "studio"
    assert job["features"] == ["dishwasher"]
    assert job["photo_counts"] == {"before": {}, "after": {}}

    response = await client.get(f"/v1/jobs/{job['id']}")
    assert response.status_code == 200
    assert response.json()["notes"] == "Key under the mat"


async def test_create_rejects_unknown_unit_type(client):
    response = await client.post("/v1/jobs", json={"unit_type": "castle"})
    assert response.status_code == 422


async def test_duplicate_job_id_conflicts(client):
    job_id = str(uuid.uuid4())
    await create_job(client, id=job_id)
    response = await client.post("/v1/jobs", json={"id": job_id})
    assert response.status_code == 409


async def test_worker_cannot_create(client, acting_as, worker):
    acting_as.user = worker
    response = await client.post("/v1/jobs", json={})
    assert response.status_code == 403


async def test_missing_job_is_404(client):
    response = await client.get(f"/v1/jobs/{uuid.uuid4()}")
    assert response.status_code == 404


async def test_list_is_scoped_by_role(client, acting_as, worker, other_worker):
    mine = await create_job(client)
    await create_job(client, assigned_worker_id=OTHER_WORKER_ID)

    response = await client.get("/v1/jobs")
    assert len(response.json()) == 2

    acting_as.user = worker
    response = await client.get("/v1/jobs")
    assert [j["id"] for j in response.json()] == [mine["id"]]

    response = await client.get("/v1/jobs", params={"status": "completed"})
    assert response.json() == []


async def test_unassigned_worker_cannot_read_job(client, acting_as, other_worker):
    job = await create_job(client)
    acting_as.user = other_worker
    response = await client.get(f"/v1/jobs/{job['id']}")
    assert response.status_code == 403


async def test_requirements_list_categories_with_counts(client, acting_as, worker):
    job = await create_job(client, unit_type="1_bed", features=["balcony"])
    acting_as.user = worker
    await upload(client, job["id"], "before", "stove", names=("a.jpg", "b.jpg"))

    response = await client.get(f"/v1/jobs/{job['id']}/requirements", params={"phase": "before"})
    body = response.json()
    assert body["allowed"] is False
    assert body["missing"] == BASE_KEYS[1:]
    assert [c["key"] for c in body["categories"]] == BASE_KEYS
    assert body["categories"][0]["photo_count"] == 2

    response = await client.get(f"/v1/jobs/{job['id']}/requirements", params={"phase": "after"})
    keys = [c["key"] for c in response.json()["categories"]]
    assert keys[len(BASE_KEYS):] == AFTER_GENERAL_KEYS + ["balcony_area", "bedroom_1"]


async def test_start_is_gated_on_before_photos(client, acting_as, worker):
    job = await create_job(client)
    acting_as.user = worker

    response = await client.post(f"/v1/jobs/{job['id']}/start")

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["reason"] == "missing_photos"
    assert detail["missing"] == BASE_KEYS


async def test_start_requires_unit_type(client, acting_as, worker):
    job = await create_job(client, unit_type=None)
    acting_as.user = worker
    for key in BASE_KEYS:
        await upload(client, job["id"], "before", key)

    response = await client.post(f"/v1/jobs/{job['id']}/start")
    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "unit_type_required"

    response = await client.post(f"/v1/jobs/{job['id']}/start", json={"unit_type": "house"})
    assert response.status_code == 200
    assert response.json()["unit_type"] == "house"


async def test_full_lifecycle(client, acting_as, worker, admin, storage_provider):
    job = await create_job(client)
    job_id = job["id"]
    acting_as.user = worker

    for key in BASE_KEYS:
        response = await upload(client, job_id, "before", key, names=(f"{key}.jpg",))
        assert response.status_code == 200, response.text
        assert response.json()["uploaded"] == 1

    response = await client.post(f"/v1/jobs/{job_id}/start")
    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"
    assert response.json()["photo_counts"]["before"]["stove"] == 1

    # Repeated start is harmless
    response = await client.post(f"/v1/jobs/{job_id}/start")
    assert response.status_code == 200

    timer = (await client.get(f"/v1/jobs/{job_id}/timer")).json()
    assert timer["running"] is True
    assert timer["status"] == "in_progress"

    response = await client.post(f"/v1/jobs/{job_id}/complete")
    assert response.status_code == 422
    assert response.json()["detail"]["missing"] == BASE_KEYS + AFTER_GENERAL_KEYS

    for key in BASE_KEYS + AFTER_GENERAL_KEYS:
        await upload(client, job_id, "after", key)

    response = await client.post(f"/v1/jobs/{job_id}/complete")
    assert response.status_code == 200
    completed = response.json()
    assert completed["status"] == "completed"
    assert completed["duration_minutes"] == 1

    activity = (await client.get(f"/v1/jobs/{job_id}/activity")).json()
    assert [a["action"] for a in activity] == ["start", "stop"]

    photos = (await client.get(f"/v1/jobs/{job_id}/photos", params={"include_urls": True})).json()
    assert len(photos["before"]) == len(BASE_KEYS)
    assert len(photos["after"]) == len(BASE_KEYS) + len(AFTER_GENERAL_KEYS)
    assert photos["before"][0]["download_url"].startswith("https://storage.test/")

    # Start after completion is a conflict
    response = await client.post(f"/v1/jobs/{job_id}/start")
    assert response.status_code == 409
    assert response.json()["detail"]["current_status"] == "completed"

    acting_as.user = admin
    response = await client.post(f"/v1/jobs/{job_id}/reset", json={"confirm": True})
    assert response.status_code == 200
    reset = response.json()
    assert reset["status"] == "pending"
    assert reset["duration_minutes"] is None
    assert reset["photo_counts"] == {"before": {}, "after": {}}
    assert storage_provider.objects == {}

    assert (await client.get(f"/v1/jobs/{job_id}/activity")).json() == []


async def test_reset_needs_confirmation(client):
    job = await create_job(client)
    response = await client.post(f"/v1/jobs/{job['id']}/reset", json={})
    assert response.status_code == 400


async def test_reset_is_administrator_only(client, acting_as, worker):
    job = await create_job(client)
    acting_as.user = worker
    response = await client.post(f"/v1/jobs/{job['id']}/reset", json={"confirm": True})
    assert response.status_code == 403


async def test_upload_rejects_unrequired_category(client, acting_as, worker):
    job = await create_job(client)
    acting_as.user = worker
    response = await upload(client, job["id"], "before", "hot_tub")
    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "unknown_category"


async def test_upload_reports_bad_files_individually(client, acting_as, worker):
    job = await create_job(client)
    acting_as.user = worker
    files = [
        ("files", ("good.jpg", make_image_bytes(), "image/jpeg")),
        ("files", ("bad.jpg", b"not an image", "image/jpeg")),
    ]
    response = await client.post(
        f"/v1/jobs/{job['id']}/photos",
        data={"phase": "before", "category_key": "sink"},
        files=files,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["uploaded"] == 1
    assert body["failed"] == 1
    assert [r["ok"] for r in body["results"]] == [True, False]


async def test_delete_photo(client, acting_as, worker):
    job = await create_job(client)
    acting_as.user = worker
    result = (await upload(client, job["id"], "before", "stove")).json()["results"][0]

    response = await client.delete(f"/v1/jobs/{job['id']}/photos/{result['photo_id']}")
    assert response.status_code == 204

    response = await client.delete(f"/v1/jobs/{job['id']}/photos/{result['photo_id']}")
    assert response.status_code == 404


async def test_worker_edits_attributes_before_start(client, acting_as, worker):
    job = await create_job(client)
    acting_as.user = worker
    response = await client.patch(
        f"/v1/jobs/{job['id']}/attributes",
        json={"unit_type": "2_beds", "features": ["laundry"]},
    )
    assert response.status_code == 200
    assert response.json()["features"] == ["laundry"]


async def test_catalog(client):
    response = await client.get("/v1/catalog")
    body = response.json()
    assert "1_bed" in body["unit_types"]
    keys = [f["key"] for f in body["features"]]
    assert "air_conditioner" in keys
    assert "laundry" in keys


async def test_job_events_require_attachment(client, acting_as, other_worker):
    job = await create_job(client)
    acting_as.user = other_worker
    response = await client.get(f"/v1/jobs/{job['id']}/events")
    assert response.status_code == 403


async def test_admin_corrects_duration(client, acting_as, worker, admin):
    job = await create_job(client)
    job_id = job["id"]

    response = await client.patch(f"/v1/jobs/{job_id}/duration", json={"duration_minutes": 30})
    assert response.status_code == 409
    assert response.json()["detail"]["current_status"] == "pending"

    acting_as.user = worker
    for key in BASE_KEYS:
        await upload(client, job_id, "before", key)
    await client.post(f"/v1/jobs/{job_id}/start")
    for key in BASE_KEYS + AFTER_GENERAL_KEYS:
        await upload(client, job_id, "after", key)
    completed = (await client.post(f"/v1/jobs/{job_id}/complete")).json()
    assert completed["duration_edited_at"] is None

    response = await client.patch(f"/v1/jobs/{job_id}/duration", json={"duration_minutes": 30})
    assert response.status_code == 403

    acting_as.user = admin
    response = await client.patch(f"/v1/jobs/{job_id}/duration", json={"duration_minutes": -5})
    assert response.status_code == 422

    response = await client.patch(f"/v1/jobs/{job_id}/duration", json={"duration_minutes": 30})
    assert response.status_code == 200
    body = response.json()
    assert body["duration_minutes"] == 30
    assert body["duration_edited_at"] is not None
    assert body["status"] == "completed"

    timer = (await client.get(f"/v1/jobs/{job_id}/timer")).json()
    assert timer["duration_minutes"] == 30
