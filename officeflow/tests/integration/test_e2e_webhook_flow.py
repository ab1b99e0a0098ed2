"""端到端：webhook 入站 -> start_flow 委派 -> worker 完成 -> 回传"""

from httpx import AsyncClient


class TestWebhookToCompletion:
    """三个入站渠道在同一个 Request 上汇合"""

    async def test_full_pipeline(self, client: AsyncClient, integration_app):
        await client.post(
            "/api/telegram/webhook",
            json={
                "update_id": 9001,
                "message": {
                    "message_id": 555,
                    "from": {"id": 1, "first_name": "Boss"},
                    "text": "把上季度的销售数据做成图表",
                },
            },
        )
        await integration_app.state.scheduler.drain()

        started = await client.post(
            "/api/workflow",
            json={
                "action": "start_flow",
                "content": "把上季度的销售数据做成图表",
                "messageId": 555,
                "delegatedTo": "py",
            },
        )
        flow = started.json()
        assert flow["adopted"] is True
        assert flow["delegated"] is True

        scheduler = integration_app.state.scheduler
        await scheduler.drain()

        done = await client.post(
            "/api/workflow",
            json={"action": "agent_complete", "agent": "py", "result": "图表已生成"},
        )
        assert done.json()["success"] is True
        await scheduler.drain()

        detail = (await client.get(f"/api/requests/{flow['requestId']}")).json()
        assert detail["request"]["state"] == "completed"
        assert detail["request"]["external_message_id"] == "555"
        assert detail["request"]["result"] == "图表已生成"
        assert [t["status"] for t in detail["tasks"]] == ["completed"]
        assert [e["state"] for e in detail["events"]] == [
            "received",
            "analyzing",
            "task_created",
            "assigned",
            "in_progress",
            "completed",
            "chain_return",
            "delivering",
        ]

        # 重复投递的 webhook 与迟到的完成都不产生新记录
        await client.post(
            "/api/telegram/webhook",
            json={
                "update_id": 9001,
                "message": {
                    "message_id": 555,
                    "from": {"id": 1, "first_name": "Boss"},
                    "text": "把上季度的销售数据做成图表",
                },
            },
        )
        late = await client.post(
            "/api/workflow",
            json={"action": "delegate_complete", "requestId": flow["requestId"]},
        )
        assert late.json()["alreadyCompleted"] is True

        listing = (await client.get("/api/requests")).json()
        assert len(listing["requests"]) == 1
        events = (await client.get("/api/workflow", params={"type": "events"})).json()
        assert events["total"] == 8
