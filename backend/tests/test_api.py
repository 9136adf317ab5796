from datetime import datetime

CHECK_AT = datetime(2026, 3, 2, 17, 0).isoformat()


class TestHealth:
    def test_health(self, client):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json() == {"status": "ok"}


class TestContainersApi:
    def test_list_and_read(self, client, storage, truck):
        res = client.get("/v1/containers/storage")
        assert res.status_code == 200
        body = res.json()
        assert body["total"] == 1
        assert body["rows"][0]["storage_code"] == "ST-01"
        assert body["rows"][0]["status"] == "Medium"

        res = client.get(f"/v1/containers/truck/{truck.id}")
        assert res.json()["ref"] == f"truck:{truck.id}"
        assert client.get("/v1/containers/truck/999").status_code == 404
        assert client.get("/v1/containers/tank/1").status_code == 422

    def test_level_correction(self, client, truck):
        res = client.put(f"/v1/containers/truck/{truck.id}/level", json={"new_level": "7000"})
        assert res.status_code == 200
        assert res.json()["current_level"] == 7000

        res = client.put(f"/v1/containers/truck/{truck.id}/level", json={"new_level": "9000"})
        assert res.status_code == 422


class TestTransfersApi:
    def test_create_and_read(self, client, storage, truck):
        res = client.post(
            "/v1/transfers",
            json={"storage_id": storage.id, "truck_id": truck.id, "amount": "1000", "operator": "Budi"},
        )
        assert res.status_code == 201
        body = res.json()
        assert body["transfer_number"].startswith("TRF-")
        assert body["storage_level_after"] == 31500
        assert body["truck_level_after"] == 6200
        assert body["efficiency_status"] == "Excellent"

        res = client.get(f"/v1/transfers/{body['id']}")
        assert res.json()["transferred_amount"] == 1000

    def test_capacity_violation_is_422_with_issues(self, client, storage, truck):
        res = client.post(
            "/v1/transfers",
            json={"storage_id": storage.id, "truck_id": truck.id, "amount": "5000", "operator": "Budi"},
        )
        assert res.status_code == 422
        assert [i["code"] for i in res.json()["issues"]] == ["capacity_exceeded"]

    def test_unknown_transfer(self, client):
        assert client.get("/v1/transfers/999").status_code == 404
        assert client.delete("/v1/transfers/999").status_code == 404

    def test_update_then_delete(self, client, storage, truck):
        created = client.post(
            "/v1/transfers",
            json={"storage_id": storage.id, "truck_id": truck.id, "amount": "1000", "operator": "Budi"},
        ).json()
        res = client.patch(f"/v1/transfers/{created['id']}", json={"transferred_amount": "1500"})
        assert res.status_code == 200
        assert res.json()["truck_level_after"] == 6700

        assert client.delete(f"/v1/transfers/{created['id']}").status_code == 204
        assert client.get(f"/v1/containers/truck/{truck.id}").json()["current_level"] == 5200

    def test_delete_conflict_when_fuel_already_gone(self, client, storage, truck):
        created = client.post(
            "/v1/transfers",
            json={"storage_id": storage.id, "truck_id": truck.id, "amount": "2000", "operator": "Budi"},
        ).json()
        client.put(f"/v1/containers/truck/{truck.id}/level", json={"new_level": "1000"})

        res = client.delete(f"/v1/transfers/{created['id']}")
        assert res.status_code == 409
        assert res.json()["issues"][0]["code"] == "insufficient_fuel"
        assert client.get(f"/v1/transfers/{created['id']}").status_code == 200


class TestTransactionsApi:
    def test_create_read_and_analyse(self, client, unit, storage):
        res = client.post(
            "/v1/transactions",
            json={
                "unit_id": unit.id,
                "source": f"storage:{storage.id}",
                "fuel_amount": "30",
                "current_hour_meter": "102",
                "current_odometer": "500",
                "operator": "Sari",
                "transaction_datetime": "2026-03-02T07:30:00",
            },
        )
        assert res.status_code == 201
        txn = res.json()
        assert txn["fuel_efficiency_per_hour"] == 15
        assert txn["fuel_source_type"] == "storage"

        res = client.get(f"/v1/transactions/{txn['id']}")
        assert res.json()["hour_meter_diff"] == 2

        res = client.get(f"/v1/reports/transactions/{txn['id']}/analysis")
        assert res.status_code == 200
        assert res.json()["rate_status"] == "Normal"

    def test_bad_source_reference(self, client, unit):
        res = client.post(
            "/v1/transactions",
            json={
                "unit_id": unit.id,
                "source": "tank:1",
                "fuel_amount": "30",
                "current_hour_meter": "102",
                "current_odometer": "500",
                "operator": "Sari",
            },
        )
        assert res.status_code == 422

    def test_meter_regression(self, client, unit, truck):
        res = client.post(
            "/v1/transactions",
            json={
                "unit_id": unit.id,
                "source": f"truck:{truck.id}",
                "fuel_amount": "30",
                "current_hour_meter": "90",
                "current_odometer": "500",
                "operator": "Sari",
            },
        )
        assert res.status_code == 422
        assert res.json()["issues"][0]["code"] == "meter_regression"


class TestStockChecksApi:
    def _record(self, client, storage, level="32300"):
        return client.post(
            "/v1/stock-checks",
            json={
                "source": f"storage:{storage.id}",
                "physical_level": level,
                "checker": "Ani",
                "check_datetime": CHECK_AT,
            },
        )

    def test_record_adjust_once(self, client, storage):
        res = self._record(client, storage)
        assert res.status_code == 201
        check = res.json()
        assert check["variance_status"] == "Critical"
        assert check["check_number"] == "CHK-20260302-STO-001"

        pending = client.get("/v1/stock-checks/pending-adjustment").json()
        assert [c["id"] for c in pending["rows"]] == [check["id"]]

        res = client.post(f"/v1/stock-checks/{check['id']}/adjust", json={"reason": "recount"})
        assert res.status_code == 200
        assert res.json()["system_adjusted"] is True
        assert client.get(f"/v1/containers/storage/{storage.id}").json()["current_level"] == 32300

        assert client.post(f"/v1/stock-checks/{check['id']}/adjust").status_code == 409

    def test_read_with_analysis(self, client, storage):
        check_id = self._record(client, storage, "32500").json()["id"]
        body = client.get(f"/v1/stock-checks/{check_id}").json()
        assert body["analysis"]["accuracy"] == "Excellent"
        assert body["variance_description"] == "Exact match"
        assert "analysis" not in client.get(f"/v1/stock-checks/{check_id}?analysis=false").json()


class TestReportsApi:
    def test_variance_report_workflow(self, client, storage):
        client.post(
            "/v1/stock-checks",
            json={"source": f"storage:{storage.id}", "physical_level": "32300", "checker": "Ani", "check_datetime": CHECK_AT},
        )
        res = client.post(
            "/v1/reports/variance",
            json={"period_start": "2026-03-02", "period_end": "2026-03-02", "report_date": "2026-03-02"},
        )
        assert res.status_code == 201
        report = res.json()
        assert report["report_number"] == "VRP-20260302-D-001"
        assert report["total_variance"] == -200

        rid = report["id"]
        assert client.post(f"/v1/reports/variance/{rid}/finalize", json={"reviewed_by": "Sup"}).json()["report_status"] == "Final"
        assert client.post(f"/v1/reports/variance/{rid}/approve", json={"approver": "Mgr"}).status_code == 200
        assert client.post(f"/v1/reports/variance/{rid}/reject", json={"reason": "late"}).status_code == 409

        data = client.get(f"/v1/reports/variance/{rid}").json()
        assert data["header"]["status"] == "Approved"
        assert data["summary"]["critical_variances"] == 1

    def test_invalid_period(self, client):
        res = client.post("/v1/reports/variance", json={"period_start": "2026-03-02", "period_end": "2026-03-01"})
        assert res.status_code == 422
        assert res.json()["issues"][0]["code"] == "invalid_period"

    def test_unit_summaries_and_session_statistics(self, client, unit, truck, daily_session):
        client.post(
            "/v1/transactions",
            json={
                "unit_id": unit.id,
                "source": f"truck:{truck.id}",
                "fuel_amount": "30",
                "current_hour_meter": "102",
                "current_odometer": "500",
                "operator": "Sari",
                "session_id": daily_session.id,
                "transaction_datetime": "2026-03-02T07:30:00",
            },
        )
        res = client.get(f"/v1/reports/units/{unit.id}/summaries", params={"period_type": "Daily", "analysis": True})
        body = res.json()
        assert body["total"] == 1
        assert body["rows"][0]["avg_fuel_per_hour"] == 15
        assert "analysis" in body["rows"][0]

        stats = client.get(f"/v1/reports/sessions/{daily_session.id}/statistics").json()
        assert stats["transactions_count"] == 1
        assert stats["unique_units"] == 1
        assert stats["most_active_units"][0]["unit_code"] == "EX-01"
        assert client.get("/v1/reports/sessions/999/statistics").status_code == 404


class TestUploadApi:
    def test_stock_check_sheet(self, client, storage, truck):
        content = "Container,Level,Type\nST-01,\"32,480\",storage\nXX-1,10,\nFT-01,5200,truck\n".encode()
        res = client.post(
            "/v1/upload/stock-checks",
            params={"checker": "Ani"},
            files={"file": ("checks.csv", content, "text/csv")},
        )
        assert res.status_code == 200
        body = res.json()
        assert (body["total_rows"], body["success_rows"], body["error_rows"]) == (3, 2, 1)
        assert body["sample_errors"][0]["row"] == 3
        assert body["error_csv_url"].endswith(".csv")
        assert body["csv_headers"] == ["container", "physical_level", "type"]

    def test_empty_file(self, client):
        res = client.post("/v1/upload/stock-checks", files={"file": ("checks.csv", b"", "text/csv")})
        assert res.status_code == 400
