from bson import ObjectId

import DPE_API
import Squad_API
import Team_API
from conftest import read_json


class TestTeamAPI:
    def test_create_then_list(self, mongo_client, make_request):
        resp = Team_API.main(make_request("POST", "/api/teams", {"name": "Platform"},
                                          route_params={"resource": "teams"}))
        assert resp.status_code == 201
        created = read_json(resp)["data"]
        assert created["name"] == "Platform"

        resp = Team_API.main(make_request("GET", "/api/team", route_params={"resource": "team"}))
        assert resp.status_code == 200
        assert [t["id"] for t in read_json(resp)] == [created["id"]]

    def test_duplicate_is_409(self, mongo_client, make_request):
        req = make_request("POST", "/api/team", {"name": "Platform"}, route_params={"resource": "team"})
        Team_API.main(req)
        resp = Team_API.main(req)
        assert resp.status_code == 409
        assert read_json(resp)["error"] == "team name already exists"

    def test_invalid_json_is_400(self, mongo_client, make_request):
        resp = Team_API.main(make_request("POST", "/api/team", b"{not json", route_params={"resource": "team"}))
        assert resp.status_code == 400
        assert read_json(resp) == {"error": "Invalid JSON", "details": None}

    def test_get_unknown_is_404(self, mongo_client, make_request):
        resp = Team_API.main(make_request("GET", "/api/team/x", route_params={"resource": "team", "id": str(ObjectId())}))
        assert resp.status_code == 404

    def test_delete_blocked_then_allowed(self, mongo_client, db, rec, make_request):
        team = rec.create("team", {"name": "Platform"})
        squad_oid = db.squads.insert_one({"name": "Legacy", "teamID": ObjectId(team["id"])}).inserted_id
        params = {"resource": "team", "id": team["id"]}

        resp = Team_API.main(make_request("DELETE", f"/api/team/{team['id']}", route_params=params))
        assert resp.status_code == 409

        db.squads.delete_one({"_id": squad_oid})
        resp = Team_API.main(make_request("DELETE", f"/api/team/{team['id']}", route_params=params))
        assert resp.status_code == 200
        assert read_json(resp)["deleted"] is True

    def test_options_preflight(self, make_request):
        resp = Team_API.main(make_request("OPTIONS", "/api/team"))
        assert resp.status_code == 204
        assert "Access-Control-Allow-Origin" in resp.headers


class TestSquadAPI:
    def test_unknown_team_is_400(self, mongo_client, make_request):
        resp = Squad_API.main(make_request("POST", "/api/squad", {"name": "Alpha", "teamId": str(ObjectId())},
                                           route_params={"resource": "squad"}))
        assert resp.status_code == 400

    def test_list_filtered_by_legacy_query_param(self, mongo_client, db, rec, make_request):
        team = rec.create("team", {"name": "Platform"})
        db.squads.insert_one({"name": "Alpha", "team_id": team["id"]})
        db.squads.insert_one({"name": "Beta", "teamId": str(ObjectId())})

        resp = Squad_API.main(make_request("GET", "/api/squads", route_params={"resource": "squads"},
                                           params={"teamID": team["id"]}))

        body = read_json(resp)
        assert [s["name"] for s in body] == ["Alpha"]
        assert body[0]["teamId"] == team["id"]

    def test_put_moves_squad_and_drops_alias(self, mongo_client, db, rec, make_request):
        t1 = rec.create("team", {"name": "One"})
        t2 = rec.create("team", {"name": "Two"})
        oid = db.squads.insert_one({"name": "Alpha", "teamID": t1["id"]}).inserted_id

        resp = Squad_API.main(make_request("PUT", f"/api/squad/{oid}", {"team_id": t2["id"]},
                                           route_params={"resource": "squad", "id": str(oid)}))

        assert resp.status_code == 200
        assert read_json(resp)["data"]["teamId"] == t2["id"]
        stored = db.squads.find_one({"_id": oid})
        assert stored["teamId"] == t2["id"]
        assert "teamID" not in stored

    def test_legacy_record_without_reference_is_500_with_details(self, mongo_client, db, make_request):
        oid = db.squads.insert_one({"name": "Broken"}).inserted_id
        resp = Squad_API.main(make_request("GET", f"/api/squad/{oid}",
                                           route_params={"resource": "squad", "id": str(oid)}))
        assert resp.status_code == 500
        assert read_json(resp)["details"]["checkedAliases"] == ["teamID", "teamId", "team_id"]


class TestDPEAPI:
    def test_update_unknown_field_is_400(self, mongo_client, rec, make_request):
        team = rec.create("team", {"name": "Platform"})
        squad = rec.create("squad", {"name": "Alpha", "teamId": team["id"]})
        dpe = rec.create("dpe", {"name": "Mharlee Dela Cruz", "squadId": squad["id"]})

        resp = DPE_API.main(make_request("PUT", f"/api/dpe/{dpe['id']}", {"salary": 1},
                                         route_params={"resource": "dpe", "id": dpe["id"]}))

        assert resp.status_code == 400
        assert "salary" in read_json(resp)["error"]

    def test_put_without_id_is_400(self, mongo_client, make_request):
        resp = DPE_API.main(make_request("PUT", "/api/dpe", {"name": "X"}, route_params={"resource": "dpe"}))
        assert resp.status_code == 400
